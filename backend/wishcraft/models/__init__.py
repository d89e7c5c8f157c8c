from .registries import Registry, RegistryItem
from .purchases import Purchase, GroupGiftContribution
from .activity import RegistryActivity

__all__ = [
    'Registry', 'RegistryItem',
    'Purchase', 'GroupGiftContribution',
    'RegistryActivity',
]

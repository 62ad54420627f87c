"""
Airseeker package.

Keeps on-chain data feeds updated from signed gateway data.
"""

from .airseeker import Airseeker
from .config import AirseekerConfig
from .models import BeaconValue, DataFeedValue, SignedData
from .state import State, StateStore

__all__ = ["Airseeker", "AirseekerConfig", "BeaconValue", "DataFeedValue", "SignedData", "State", "StateStore"]
__version__ = "0.1.0"

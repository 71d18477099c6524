from bitredict.services.oddyssey.pipeline import OddysseyPipeline
from bitredict.services.oddyssey.selector import CycleSelector, scale_odds, to_chain_match

__all__ = ["CycleSelector", "OddysseyPipeline", "scale_odds", "to_chain_match"]

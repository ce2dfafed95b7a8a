from fillrecon.matching.classifier import classify
from fillrecon.matching.groups import GroupMatcher, MatchGroup
from fillrecon.matching.partials import PartialFillAggregator

__all__ = ["GroupMatcher", "MatchGroup", "PartialFillAggregator", "classify"]

"""
Personalized pin feeds.

    * ``SignalAggregator`` turns a user's saves, boards, pins, and follows
      into a ranked tag-affinity profile plus the set of pins already seen,
    * ``FeedService`` builds the for-you, trending, and following feeds.
"""

from .feeds import FeedService, rank_by_engagement
from .signals import InterestProfile, SignalAggregator, tag_affinity

__all__ = ["FeedService", "InterestProfile", "SignalAggregator", "rank_by_engagement", "tag_affinity"]

"""Test helpers of the seqplore package."""

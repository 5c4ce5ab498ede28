"""Test suite for the Cluster Trends backend."""

"""
Core integration layer: Graph API client, channels, normalization and errors.
"""

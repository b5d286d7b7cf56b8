"""
Services module for client-side map layer state.

This module provides layer records, feature classes and rebindable layer
proxies under services.layer_records.
"""

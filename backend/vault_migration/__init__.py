"""
Vault migration engine: copies credential vaults and their items between two
tenants.
"""

__version__ = "2.0.0"

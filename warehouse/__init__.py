"""
Sales Warehouse Conformance Engine

Rebuilds a sales star schema from CRM and ERP extracts through raw, cleansed
and dimensional layers.
"""

__version__ = "1.0.0"

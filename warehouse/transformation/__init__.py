"""
Data Transformation Module

Import the pipeline driver from `warehouse.transformation.transformers`
directly; it must not be loaded from here (warehouse.quality imports rules).
"""
from .cleaners import CleaningStats, DataCleaner, clean_dataframe
from .dimensions import DimensionBuilder, build_customer_dimension, build_product_dimension
from .facts import FactResolver, resolve_sales_facts

__all__ = [
    "CleaningStats",
    "DataCleaner",
    "clean_dataframe",
    "DimensionBuilder",
    "build_customer_dimension",
    "build_product_dimension",
    "FactResolver",
    "resolve_sales_facts",
]

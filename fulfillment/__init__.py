"""SJ Fulfillment back-office: stock allocation, order fulfillment and bulk ingestion."""

__version__ = "1.0.0"

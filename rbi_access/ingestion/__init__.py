"""Reference data ingestion"""

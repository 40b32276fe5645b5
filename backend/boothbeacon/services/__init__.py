"""Crawl pipeline services."""

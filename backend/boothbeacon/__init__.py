"""Booth Beacon crawl pipeline."""

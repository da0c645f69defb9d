"""
Core building blocks: data types, errors, capture dates, path security and
file system helpers.
"""

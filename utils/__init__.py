"""
Storage, dataset, reporting and chart helpers.
"""

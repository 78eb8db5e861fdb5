"""
Visibility gate hiding page content until personalization completes.
"""

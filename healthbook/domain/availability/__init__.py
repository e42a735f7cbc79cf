"""Availability query - is there a bookable token for a provider on a date"""

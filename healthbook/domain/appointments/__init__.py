"""Appointment store - authoritative appointment records and token accounting"""

"""Booking saga - reserve, pay, confirm or compensate; plus rescheduling"""

"""Session store - clinic sessions per provider and calendar date"""

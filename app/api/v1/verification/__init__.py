"""Identity verification module"""

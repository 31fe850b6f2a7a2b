"""Withdrawals module"""

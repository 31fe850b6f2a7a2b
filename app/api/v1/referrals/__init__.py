"""Referrals module"""

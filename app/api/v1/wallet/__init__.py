"""Wallet module"""

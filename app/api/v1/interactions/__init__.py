"""Interaction requests module"""

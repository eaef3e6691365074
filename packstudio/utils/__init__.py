"""Configuration, logging and helper utilities"""

"""Privilege engines for declauth.

This package contains implementations of the PrivilegeEngine interface.

Available engines:
- static: Role grants read from a fixed table or YAML file, with simple attribute conditions
"""

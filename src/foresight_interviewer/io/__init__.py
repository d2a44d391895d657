"""
IO module for interview interfaces.

Provides text and voice console interfaces driving an interview session.
"""

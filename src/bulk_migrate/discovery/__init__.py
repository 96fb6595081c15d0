"""Inventory discovery."""

from .inventory import AdoInventory, GithubInventory

__all__ = ['AdoInventory', 'GithubInventory']

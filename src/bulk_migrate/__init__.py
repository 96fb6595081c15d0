"""Bulk Migration Tool

Plans and drives bulk migration of repositories from Azure DevOps, GitHub.com
or GitHub Enterprise Server to a GitHub organization: generates sequential or
parallel migration scripts and tracks migration jobs to completion.
"""

__version__ = '0.1.0'
__author__ = 'Bulk Migration Team'
__email__ = 'team@example.com'

from .cli.main import main

__all__ = ['main']

"""Navigator Vault Meta information.
   Navigator Vault keeps user secrets encrypted on the client,
   behind a short-lived PIN session.
"""
__title__ = 'navigator_vault'
__description__ = (
   'Navigator Vault encrypts user secrets on the client '
   'and gates them behind a PIN session.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'

"""Crypted Vault Meta information.
   Crypted Vault keeps wallet keys and mnemonics sealed under a master password.
"""
__title__ = 'crypted_vault'
__description__ = (
   'Crypted Vault keeps wallet keys and mnemonics sealed '
   'under a master password.'
)
__version__ = '0.1.0'
__license__ = 'MIT'

"""Coconut Meta information.
   Coconut is a local secrets vault unlocked by a single master password.
"""
__title__ = 'coconut'
__description__ = (
   'Coconut is a local secrets vault: one master password unlocks '
   'a set of encrypted credential records.'
)
__version__ = '1.0.0'
__copyright__ = 'Copyright (c) 2025 Om Patil'
__author__ = 'Om Patil'
__author_email__ = 'patilom001@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/ompatil-15/coconut'

"""aquasuit: aquaculture site suitability from sea surface temperature and
depth rasters, with suitable area summed per maritime zone."""
from gettext import translation
import importlib.metadata
import logging
import os
import sys

LOGGER = logging.getLogger('aquasuit')
LOGGER.addHandler(logging.NullHandler())
__all__ = ['set_locale', ]

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    LOGGER.exception('Could not load aquasuit version information')
    __version__ = 'unknown'

# compiled message catalogs, if any, live here as <lang>/LC_MESSAGES/*.mo
LOCALE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'locales')


def set_locale(locale_code):
    """Translate user-facing messages, such as validation warnings, into
    ``locale_code`` (an ISO 639-1 code) by replacing ``aquasuit.gettext``.

    Languages without a catalog get the English messages.
    """
    translator = translation(
        'messages', languages=[locale_code], localedir=LOCALE_DIR,
        fallback=True)
    setattr(sys.modules[__name__], 'gettext', translator.gettext)


set_locale('en')

"""
User-facing strings in the supported locales.

Only the strings the service itself produces live here: the label shown
for the base (no suffix) type and the notification texts.
"""
from typing import Callable, Optional

DEFAULT_LOCALE = "en"

MESSAGES = {
    "en": {
        "noTypeSuffix": "Base",
        "fetchErrorTitle": "Error loading tiles",
        "fetchErrorDescription": "Could not load tiles. Please try again later.",
        "saveErrorTitle": "Error saving tile",
        "saveErrorNoModelOrQuantity": "Enter a model number and quantity, or check at least one type with a quantity.",
        "deleteErrorTitle": "Error deleting tiles",
        "deleteErrorGroupNotFound": "The tile group could not be found.",
        "authRequired": "Sign in to view the inventory.",
        "storeInitError": "The tile store could not be initialized.",
    },
    "gu": {
        "noTypeSuffix": "બેઝ",
        "fetchErrorTitle": "ટાઇલ્સ લોડ કરવામાં ભૂલ",
        "fetchErrorDescription": "ટાઇલ્સ લોડ થઈ શકી નથી. કૃપા કરીને પછી ફરી પ્રયાસ કરો.",
        "saveErrorTitle": "ટાઇલ સાચવવામાં ભૂલ",
        "deleteErrorTitle": "ટાઇલ્સ કાઢી નાખવામાં ભૂલ",
    },
}


def resolve_locale(locale: Optional[str]) -> str:
    """Map ``gu-IN``, ``en-US,en;q=0.9`` and similar to a supported locale."""
    if not locale:
        return DEFAULT_LOCALE
    primary = locale.split(",")[0].split(";")[0].strip().split("-")[0].lower()
    return primary if primary in MESSAGES else DEFAULT_LOCALE


def translate(key: str, locale: Optional[str] = None) -> str:
    table = MESSAGES.get(resolve_locale(locale), MESSAGES[DEFAULT_LOCALE])
    return table.get(key) or MESSAGES[DEFAULT_LOCALE].get(key) or key


def suffix_labeler(locale: Optional[str] = None) -> Callable[[str], str]:
    """
    Return the display mapping for stored type tags: the empty (base) tag
    becomes the localized "no suffix" label, every other tag shows as is.
    """
    no_suffix = translate("noTypeSuffix", locale)

    def label(type_suffix: str) -> str:
        return no_suffix if not type_suffix else type_suffix

    return label

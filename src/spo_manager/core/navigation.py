from typing import Optional

from .models import NavigationConfig, NavigationDiff

NAVIGATION_SETTINGS = ("HorizontalQuickLaunch", "MegaMenuEnabled")


def diff_navigation(source: NavigationConfig, target: Optional[NavigationConfig]) -> NavigationDiff:
    """Settings the target must gain, lose or change to match the source.

    ``added`` holds source settings missing on the target, ``removed`` holds
    target settings the source does not have.
    """
    target_settings = target.settings if target is not None else {}
    diff = NavigationDiff()
    for name, value in source.settings.items():
        if name not in target_settings:
            diff.added[name] = value
        elif target_settings[name] != value:
            diff.changed[name] = {"source": value, "target": target_settings[name]}
    for name, value in target_settings.items():
        if name not in source.settings:
            diff.removed[name] = value
    return diff

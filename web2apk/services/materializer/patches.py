"""
Text patches applied to the Android template.

Each patch is an exact, single-occurrence regular-expression substitution over a
file whose layout is fixed and versioned with this package. A missing anchor means
the template and this module disagree, which is reported as ``TemplateError``
rather than silently producing an unconfigured app.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from ...core.exceptions import TemplateError
from ...models.build import BuildConfig, FeatureFlags

STORAGE_PERMISSIONS = (
    '<uses-permission android:name="android.permission.READ_EXTERNAL_STORAGE" />',
    '<uses-permission android:name="android.permission.WRITE_EXTERNAL_STORAGE" '
    'android:maxSdkVersion="28" />',
)
LOCATION_PERMISSIONS = (
    '<uses-permission android:name="android.permission.ACCESS_FINE_LOCATION" />',
    '<uses-permission android:name="android.permission.ACCESS_COARSE_LOCATION" />',
)

# Activity constant -> FeatureFlags attribute
FEATURE_CONSTANTS = {
    "ENABLE_PULL_TO_REFRESH": "pull_to_refresh",
    "ENABLE_PROGRESS_BAR": "progress_bar",
    "ENABLE_ERROR_PAGE": "error_page",
    "ENABLE_FILE_UPLOAD": "file_upload",
    "ENABLE_DEEP_LINKING": "deep_linking",
    "ENABLE_LOCAL_STORAGE": "local_storage",
    "ENABLE_GEOLOCATION": "geolocation",
}

WATERMARK_PLACEHOLDER = "// WATERMARK_PLACEHOLDER"

WATERMARK_SNIPPET = '''// Free version watermark
            webView.evaluateJavascript("""
                (function() {
                    if (document.getElementById('web2apk-watermark')) return;
                    var mark = document.createElement('div');
                    mark.id = 'web2apk-watermark';
                    mark.textContent = '%(text)s';
                    mark.style.cssText = 'position:fixed;bottom:10px;right:10px;background:rgba(0,0,0,0.7);color:white;padding:5px 10px;border-radius:5px;font-size:12px;z-index:999999;';
                    document.body.appendChild(mark);
                })();
            """, null)'''


def escape_xml(value: str) -> str:
    """Escape ``& < > " '`` for use in XML text and attributes."""
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def kotlin_string(value: str) -> str:
    """Escape a value for a double-quoted Kotlin string literal."""
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("\n", "\\n")
    )


def replace_once(
    text: str,
    pattern: str,
    replacement: str | Callable[[re.Match[str]], str],
    *,
    source: str,
    flags: int = 0,
) -> str:
    """Replace the first match of ``pattern`` with a literal or computed replacement.

    Raises:
        TemplateError: If the pattern does not occur in ``text``.
    """
    repl = replacement if callable(replacement) else (lambda _: replacement)
    patched, count = re.subn(pattern, repl, text, count=1, flags=flags)
    if count == 0:
        raise TemplateError(
            message="template does not match this version of web2apk",
            path=source,
            pattern=pattern,
        )
    return patched


def patch_manifest(text: str, package_name: str, features: FeatureFlags) -> str:
    """Set the package attribute and declare feature permissions."""
    text = replace_once(
        text, r'package="[^"]*"', f'package="{package_name}"', source="AndroidManifest.xml"
    )

    permissions: list[str] = []
    if features.file_upload:
        permissions.extend(STORAGE_PERMISSIONS)
    if features.geolocation:
        permissions.extend(LOCATION_PERMISSIONS)
    if not permissions:
        return text

    block = "".join(f"{line}\n    " for line in permissions)
    return replace_once(
        text, r"<application\b", f"{block}\n    <application", source="AndroidManifest.xml"
    )


def patch_build_descriptor(text: str, config: BuildConfig) -> str:
    """Set applicationId, versionCode and versionName in ``app/build.gradle``."""
    source = "app/build.gradle"
    text = replace_once(
        text, r'applicationId\s+"[^"]*"', f'applicationId "{config.package_name}"', source=source
    )
    text = replace_once(
        text, r"versionCode\s+\d+", f"versionCode {config.version_code}", source=source
    )
    return replace_once(
        text,
        r'versionName\s+"[^"]*"',
        f'versionName "{kotlin_string(config.version_name)}"',
        source=source,
    )


def patch_display_name(text: str, app_name: str) -> str:
    """Set the ``app_name`` string resource."""
    return replace_once(
        text,
        r'<string name="app_name">.*?</string>',
        f'<string name="app_name">{escape_xml(app_name)}</string>',
        source="res/values/strings.xml",
    )


def patch_splash_color(text: str, color: str) -> str:
    """Set the ``splash_background`` color resource."""
    return replace_once(
        text,
        r'<color name="splash_background">.*?</color>',
        f'<color name="splash_background">{color}</color>',
        source="res/values/colors.xml",
    )


def patch_activity(
    text: str,
    config: BuildConfig,
    features: FeatureFlags,
    *,
    watermark: str | None,
) -> str:
    """Rewrite the activity's package, target URL, feature constants and watermark.

    Args:
        text: Activity source.
        config: Build configuration.
        features: Feature toggles.
        watermark: Watermark text to inject, or None to leave the page unmarked.
    """
    source = "MainActivity.kt"
    text = replace_once(
        text, r"^package .+$", f"package {config.package_name}", source=source, flags=re.MULTILINE
    )
    url = f'"{kotlin_string(config.website_url)}"'
    text = replace_once(
        text,
        r'^(\s*private val WEBSITE_URL = )".*"$',
        lambda m: m.group(1) + url,
        source=source,
        flags=re.MULTILINE,
    )
    # Declaration lines only
    for constant, attribute in FEATURE_CONSTANTS.items():
        value = "true" if getattr(features, attribute) else "false"
        text = replace_once(
            text,
            rf"^(\s*private val {constant} = )\w+$",
            lambda m, value=value: m.group(1) + value,
            source=source,
            flags=re.MULTILINE,
        )

    if watermark is not None:
        label = watermark.replace("\\", "\\\\").replace("'", "\\'").replace("$", "${'$'}")
        text = replace_once(
            text,
            re.escape(WATERMARK_PLACEHOLDER),
            WATERMARK_SNIPPET % {"text": label},
            source=source,
        )
    return text

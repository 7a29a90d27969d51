"""
web2apk: Website-to-APK build orchestration.

Queues per-user build requests, materializes a fixed Android WebView project template
from each request's configuration and drives the Gradle and apksigner toolchain to
produce an installable package.
"""

__version__ = "1.0.0"
__author__ = "Web2APK Team"

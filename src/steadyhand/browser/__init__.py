"""Browser-facing components: session, locator resolution, CAPTCHA, extraction and handlers."""

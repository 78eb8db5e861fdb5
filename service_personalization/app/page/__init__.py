"""
Page backends.

- base: Page/Element interfaces, PageEnvironment and PageSignal.
- soup: In-memory BeautifulSoup document.
- browser: Live Playwright page.
"""

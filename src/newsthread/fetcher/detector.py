"""付费墙检测器."""

import re
from typing import ClassVar

from bs4 import BeautifulSoup


class PaywallDetector:
    """基于启发式规则检测页面是否有付费墙."""

    # 结构化数据中的免费访问标记
    ACCESSIBLE_FOR_FREE_PATTERN: ClassVar[re.Pattern[str]] = re.compile(
        r"[\"']?isAccessibleForFree[\"']?\s*:\s*[\"']?false",
        re.IGNORECASE,
    )

    # 常见的付费墙元素
    PAYWALL_SELECTORS: ClassVar[list[str]] = [
        ".paywall",
        ".subscription-required",
        ".subscriber-only",
        "#paywall",
        ".tp-modal",
        ".pf-paywall",
        '[data-testid="paywall"]',
    ]

    # 常见的付费墙提示语
    PAYWALL_PHRASES: ClassVar[list[str]] = [
        "subscribe to continue reading",
        "subscription required",
        "subscribers only",
        "premium content",
        "register to read",
        "sign in to continue",
        "this content is for subscribers",
        "your free articles",
    ]

    def detect(self, html: str) -> str | None:
        """
        检测付费墙.

        Args:
            html: 页面 HTML

        Returns:
            命中的规则描述，未检测到时返回 None
        """
        if not html:
            return None

        # 规则1：结构化数据声明非免费
        if self.ACCESSIBLE_FOR_FREE_PATTERN.search(html):
            return "isAccessibleForFree=false"

        soup = BeautifulSoup(html, "lxml")

        # 规则2：付费墙 CSS 标记
        for selector in self.PAYWALL_SELECTORS:
            if soup.select_one(selector) is not None:
                return f"paywall element: {selector}"

        # 规则3：可见文本中的付费墙提示语
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        visible = " ".join(soup.get_text(" ").split()).lower()
        for phrase in self.PAYWALL_PHRASES:
            if phrase in visible:
                return f"paywall phrase: {phrase}"

        return None

    def is_paywalled(self, html: str) -> bool:
        return self.detect(html) is not None

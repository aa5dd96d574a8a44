"""Keyword analysis of a request: action verbs, named targets, project type.

Shared by the heuristic classifier and the planner. Thai has no word
boundaries, so Thai keywords match as substrings while Latin keywords must
match whole words.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from sitepilot.core.types import WorkerRole

_THAI_CHARS = re.compile(r"[฀-๿]")


@dataclass(frozen=True)
class Target:
    name: str
    kind: str  # website | component | styling | page | feature | data | release
    area: str  # capability area; one task per area in a complex plan
    role: WorkerRole
    keywords: tuple[str, ...]


TARGETS: tuple[Target, ...] = (
    Target("website", "website", "ui", WorkerRole.FRONTEND,
           ("เว็บไซต์", "เว็บ", "website", "web site", "webpage", "site")),
    Target("navbar", "component", "ui", WorkerRole.FRONTEND,
           ("navbar", "nav bar", "navigation", "แถบนำทาง", "เมนูบาร์")),
    Target("header", "component", "ui", WorkerRole.FRONTEND, ("header", "ส่วนหัว")),
    Target("footer", "component", "ui", WorkerRole.FRONTEND, ("footer", "ส่วนท้าย")),
    Target("hero", "component", "ui", WorkerRole.FRONTEND, ("hero", "banner", "แบนเนอร์")),
    Target("menu", "component", "ui", WorkerRole.FRONTEND, ("menu", "เมนู")),
    Target("about", "component", "ui", WorkerRole.FRONTEND, ("about", "เกี่ยวกับ")),
    Target("contact", "component", "ui", WorkerRole.FRONTEND, ("contact", "ติดต่อ")),
    Target("gallery", "component", "ui", WorkerRole.FRONTEND, ("gallery", "แกลเลอรี่", "แกลเลอรี")),
    Target("button", "component", "ui", WorkerRole.FRONTEND, ("button", "ปุ่ม")),
    Target("styling", "styling", "ui", WorkerRole.FRONTEND,
           ("สี", "color", "colour", "theme", "ธีม", "font", "ฟอนต์", "style", "สไตล์")),
    Target("page", "page", "ui", WorkerRole.FRONTEND, ("page", "เพจ", "หน้าเว็บ")),
    Target("template", "website", "ui", WorkerRole.FRONTEND, ("template", "เทมเพลต")),
    Target("login", "feature", "auth", WorkerRole.BACKEND,
           ("login", "log in", "sign in", "signin", "sign up", "signup", "register",
            "authentication", "auth", "ล็อกอิน", "ล็อคอิน", "เข้าสู่ระบบ", "สมัครสมาชิก", "สมาชิก")),
    Target("orders", "feature", "commerce", WorkerRole.BACKEND,
           ("ระบบสั่งซื้อ", "สั่งซื้อ", "order", "orders", "cart", "ตะกร้า", "checkout",
            "ชำระเงิน", "payment", "booking", "ระบบจอง", "จองห้อง", "จองโต๊ะ")),
    Target("database", "data", "data", WorkerRole.BACKEND,
           ("database", "ฐานข้อมูล", "schema")),
    Target("api", "data", "data", WorkerRole.BACKEND,
           ("api", "endpoint", "backend", "แบ็กเอนด์", "แบ็คเอนด์", "server", "เซิร์ฟเวอร์", "crud")),
    Target("deployment", "release", "release", WorkerRole.DEPLOYMENT,
           ("deploy", "ดีพลอย", "publish", "เผยแพร่", "release", "go live", "ขึ้นออนไลน์", "launch")),
)

CREATE_VERBS = ("สร้าง", "ทำเว็บ", "ขอเว็บ", "อยากได้เว็บ", "create", "build", "make", "generate")
EDIT_VERBS = (
    "แก้ไข", "แก้", "เปลี่ยน", "ปรับ", "ลบ", "อัปเดต", "อัพเดต",
    "edit", "change", "modify", "update", "remove", "delete", "fix", "replace",
)
ADD_VERBS = ("เพิ่ม", "ใส่", "add", "insert")
RELEASE_VERBS = ("deploy", "ดีพลอย", "publish", "เผยแพร่", "launch", "release")
NEW_WORDS = ("ใหม่", "new", "another", "อีกเว็บ")

GREETINGS = (
    "สวัสดี", "หวัดดี", "ดีจ้า", "ขอบคุณ", "คุณคือใคร", "ชื่ออะไร", "แนะนำตัว",
    "hello", "hi", "hey", "good morning", "good evening", "thanks", "thank you", "who are you",
)
QUESTION_MARKERS = (
    "?", "ไหม", "มั้ย", "อะไร", "อย่างไร", "ยังไง", "ทำไม", "เท่าไหร่", "หรือเปล่า", "ได้ไหม",
    "what", "how", "why", "when", "where", "which", "can you", "could you",
)

PROJECT_TYPES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("bookstore", ("ร้านหนังสือ", "bookstore", "book store")),
    ("cafe", ("ร้านกาแฟ", "กาแฟ", "คาเฟ่", "coffee", "cafe", "café")),
    ("bakery", ("เบเกอรี่", "ขนมปัง", "ร้านขนม", "bakery")),
    ("restaurant", ("ร้านอาหาร", "อาหาร", "restaurant", "bistro")),
    ("hotel", ("โรงแรม", "รีสอร์ท", "hotel", "resort")),
    ("healthcare", ("คลินิก", "โรงพยาบาล", "clinic", "hospital")),
    ("academy", ("สถาบัน", "โรงเรียน", "คอร์ส", "academy", "school", "course")),
    ("travel", ("ท่องเที่ยว", "ทัวร์", "travel", "tour")),
    ("news", ("ข่าว", "บล็อก", "news", "blog")),
    ("portfolio", ("ผลงาน", "พอร์ตโฟลิโอ", "portfolio")),
    ("ecommerce", ("ขายของ", "ร้านค้าออนไลน์", "เว็บขาย", "ecommerce", "e-commerce", "online shop", "shop", "store")),
)


def _is_latin(keyword: str) -> bool:
    return not _THAI_CHARS.search(keyword) and keyword[:1].isalnum()


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    if _is_latin(keyword):
        return re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")
    return re.compile(re.escape(keyword))


_PATTERN_CACHE: dict[str, re.Pattern[str]] = {}


def _finditer(keyword: str, text: str):
    pattern = _PATTERN_CACHE.get(keyword)
    if pattern is None:
        pattern = _PATTERN_CACHE[keyword] = _keyword_pattern(keyword)
    return pattern.finditer(text)


def contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(next(_finditer(k, text), None) is not None for k in keywords)


def is_thai(text: str) -> bool:
    return bool(_THAI_CHARS.search(text))


@dataclass(frozen=True)
class TargetMatch:
    target: Target
    start: int
    end: int

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def area(self) -> str:
        return self.target.area


@dataclass
class RequestAnalysis:
    text: str
    targets: list[TargetMatch] = field(default_factory=list)
    create_verb: bool = False
    edit_verb: bool = False
    add_verb: bool = False
    release_verb: bool = False
    wants_new: bool = False
    is_greeting: bool = False
    is_question: bool = False
    project_type: Optional[str] = None
    thai: bool = False

    @property
    def has_action(self) -> bool:
        return self.create_verb or self.modify_verb or self.release_verb

    @property
    def modify_verb(self) -> bool:
        return self.edit_verb or self.add_verb

    @property
    def areas(self) -> list[str]:
        seen: list[str] = []
        for match in self.targets:
            if match.area not in seen:
                seen.append(match.area)
        return seen

    def targets_in(self, area: str) -> list[TargetMatch]:
        return [m for m in self.targets if m.area == area]


def _find_targets(text: str) -> list[TargetMatch]:
    candidates: list[TargetMatch] = []
    for target in TARGETS:
        for keyword in target.keywords:
            for m in _finditer(keyword, text):
                candidates.append(TargetMatch(target, m.start(), m.end()))

    # Longest match wins where keywords overlap ("ระบบสั่งซื้อ" over "สั่งซื้อ").
    candidates.sort(key=lambda c: (c.start, -(c.end - c.start)))
    accepted: list[TargetMatch] = []
    last_end = -1
    for candidate in candidates:
        if candidate.start < last_end:
            continue
        accepted.append(candidate)
        last_end = candidate.end
    return accepted


def detect_project_type(text: str) -> Optional[str]:
    lowered = text.lower()
    for project_type, keywords in PROJECT_TYPES:
        if contains_any(lowered, keywords):
            return project_type
    return None


def analyze(text: str) -> RequestAnalysis:
    """Extract verbs, targets and project type from a raw user message."""
    lowered = " ".join(text.lower().split())
    analysis = RequestAnalysis(
        text=text,
        targets=_find_targets(lowered),
        create_verb=contains_any(lowered, CREATE_VERBS),
        edit_verb=contains_any(lowered, EDIT_VERBS),
        add_verb=contains_any(lowered, ADD_VERBS),
        release_verb=contains_any(lowered, RELEASE_VERBS),
        wants_new=contains_any(lowered, NEW_WORDS),
        is_greeting=contains_any(lowered, GREETINGS),
        is_question=contains_any(lowered, QUESTION_MARKERS),
        project_type=detect_project_type(lowered),
        thai=is_thai(text),
    )

    # "deploy the website" names the site only as the thing being released.
    if "release" in analysis.areas and not analysis.create_verb:
        ui = analysis.targets_in("ui")
        if ui and all(m.target.kind == "website" for m in ui):
            analysis.targets = [m for m in analysis.targets if m.area != "ui"]

    return analysis

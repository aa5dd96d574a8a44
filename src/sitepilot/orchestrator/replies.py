"""User-facing reply text in Thai and English."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sitepilot.orchestrator.dispatcher import DispatchResult
    from sitepilot.orchestrator.plan import TaskPlan

CHAT_SYSTEM_PROMPT = """\
You are SitePilot, a friendly assistant that builds and edits websites for small businesses.
Answer in the same language as the user (Thai or English). Keep replies short and helpful.
If the user seems to want a website change, invite them to describe what to build or edit."""

_TEXT = {
    "greeting": (
        "สวัสดีครับ! ผมเป็นผู้ช่วยสร้างเว็บไซต์ บอกได้เลยครับว่าอยากสร้างเว็บใหม่หรือแก้ไขส่วนไหน",
        "Hello! I'm your website assistant. Tell me what you'd like to build or change.",
    ),
    "unavailable": (
        "ขออภัยครับ ตอนนี้ระบบ AI ไม่พร้อมใช้งานชั่วคราว กรุณาลองใหม่อีกครั้งในอีกสักครู่",
        "Sorry, the AI service is temporarily unavailable. Please try again in a moment.",
    ),
    "clarify": (
        "ขอรายละเอียดเพิ่มอีกนิดครับ ต้องการสร้างเว็บไซต์ใหม่ แก้ไขส่วนไหนของเว็บ หรือ deploy เว็บไซต์?",
        "Could you tell me a bit more? Would you like a new website, a change to part of your site, or a deployment?",
    ),
    "internal_error": (
        "ขออภัยครับ เกิดข้อผิดพลาดภายในระหว่างวางแผนงาน กรุณาลองใหม่อีกครั้ง",
        "Sorry, something went wrong while planning that request. Please try again.",
    ),
    "all_done": (
        "เรียบร้อยครับ! ทำครบทั้ง {count} งาน",
        "Done! All {count} tasks completed.",
    ),
    "partial": (
        "ทำเสร็จ {ok} จาก {count} งาน มีบางงานไม่สำเร็จครับ",
        "Completed {ok} of {count} tasks; some did not succeed.",
    ),
    "all_failed": (
        "ขออภัยครับ ไม่สามารถทำงานนี้ได้สำเร็จ",
        "Sorry, I couldn't complete that request.",
    ),
    "cancelled": (
        "ยกเลิกงานที่เหลือแล้วครับ",
        "The remaining tasks were cancelled.",
    ),
    "task_ok": ("✓ {description}", "✓ {description}"),
    "task_failed": ("✗ {description}: {error}", "✗ {description}: {error}"),
    "task_skipped": ("- ข้าม: {description}", "- skipped: {description}"),
    "deployed_at": ("เว็บไซต์ออนไลน์แล้วที่ {url}", "Your site is live at {url}"),
}

_NEXT_STEPS = {
    "after_build": (
        ["ปรับสีหรือฟอนต์ให้เข้ากับแบรนด์", "เพิ่มหรือแก้ไขเนื้อหาแต่ละส่วน", "deploy เว็บไซต์ให้ออนไลน์"],
        ["Adjust colors or fonts to match your brand", "Edit the content of each section", "Deploy the site"],
    ),
    "after_deploy": (
        ["ตรวจสอบเว็บไซต์บนมือถือ", "เชื่อมต่อโดเมนของคุณเอง"],
        ["Check the site on mobile", "Connect your own domain"],
    ),
    "after_failure": (
        ["ลองส่งคำขออีกครั้ง", "อธิบายรายละเอียดเพิ่มเติม"],
        ["Try the request again", "Describe the change in more detail"],
    ),
}


def text(key: str, thai: bool, **values) -> str:
    template = _TEXT[key][0 if thai else 1]
    return template.format(**values) if values else template


def next_steps(result: DispatchResult, thai: bool) -> list[str]:
    if result.failed:
        key = "after_failure"
    elif result.deployment_url:
        key = "after_deploy"
    else:
        key = "after_build"
    return list(_NEXT_STEPS[key][0 if thai else 1])


def summarize(plan: TaskPlan, result: DispatchResult, thai: bool) -> str:
    """Describe a dispatch outcome task by task."""
    count = len(plan.tasks)
    ok = len(result.succeeded)
    if ok == count:
        key = "all_done"
    elif ok == 0:
        key = "cancelled" if result.cancelled and result.success else "all_failed"
    else:
        key = "partial"

    lines = [text(key, thai, ok=ok, count=count)]
    if plan.reply:
        lines.insert(0, plan.reply)
    for task in plan.tasks:
        if task.id in result.succeeded:
            lines.append(text("task_ok", thai, description=task.description))
        elif task.id in result.failed:
            lines.append(text("task_failed", thai, description=task.description, error=result.failed[task.id]))
        elif task.id in result.skipped:
            lines.append(text("task_skipped", thai, description=task.description))
    if result.cancelled and key != "cancelled":
        lines.append(text("cancelled", thai))
    if result.deployment_url:
        lines.append(text("deployed_at", thai, url=result.deployment_url))
    return "\n".join(lines)

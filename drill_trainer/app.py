"""Pygame UI shell for the Drill Trainer.

Main Menu -> Practice Drill / Evaluation Drill. The drill screen maps key
presses to command keys, ticks the session once per frame and draws the
latest snapshots. Timing, scoring and state live in drill_trainer/* (core
modules); nothing here mutates them except through DrillSession.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .clock import RealClock
from .drill_core import DrillMode, Facing, SessionPhase, format_clock
from .results import attempt_result_from_session
from .session import DrillSession, DrillSnapshot, build_drill_session

logger = logging.getLogger(__name__)

MODE_ENV = "DRILL_TRAINER_MODE"
LOG_LEVEL_ENV = "DRILL_TRAINER_LOG_LEVEL"

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

_NAMED_KEYS: dict[int, str] = {
    pygame.K_UP: "ArrowUp",
    pygame.K_DOWN: "ArrowDown",
    pygame.K_LEFT: "ArrowLeft",
    pygame.K_RIGHT: "ArrowRight",
    pygame.K_RETURN: "Enter",
    pygame.K_KP_ENTER: "Enter",
}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def update(self) -> None:
        if self._screens:
            self._screens[-1].update()

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._items:
                self._items[self._selected].action()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def update(self) -> None:
        return

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        bg = (22, 44, 22)
        border = (226, 236, 210)
        text_main = (238, 245, 230)
        text_muted = (186, 204, 176)
        active_bg = (244, 248, 236)
        active_text = (20, 48, 20)

        surface.fill(bg)
        frame = pygame.Rect(20, 20, max(260, w - 40), max(220, h - 40))
        pygame.draw.rect(surface, border, frame, 2)

        title = self._title_font.render(self._title, True, text_main)
        surface.blit(title, title.get_rect(midtop=(frame.centerx, frame.y + 18)))

        row_h = 40
        y = frame.y + 90
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 60, y, frame.w - 120, row_h)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, active_bg, row)
            else:
                pygame.draw.rect(surface, (62, 96, 62), row, 1)
            text = self._item_font.render(item.label, True, active_text if selected else text_main)
            surface.blit(text, (row.x + 12, row.y + (row.h - text.get_height()) // 2))
            y += row_h + 8

        foot = self._hint_font.render("Enter/Space: Select  |  Esc/Backspace: Back", True, text_muted)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class DrillScreen:
    def __init__(self, app: App, *, session_factory: Callable[[], DrillSession]) -> None:
        self._app = app
        self._session = session_factory()
        self._small_font = pygame.font.Font(None, 24)
        self._tiny_font = pygame.font.Font(None, 18)
        self._mid_font = pygame.font.Font(None, 32)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return

        shift = bool(getattr(event, "mod", 0) & pygame.KMOD_SHIFT)
        # Emergency exit is always available; plain Esc respects the evaluation lock.
        if event.key == pygame.K_F12 or (event.key == pygame.K_ESCAPE and shift):
            self._app.pop()
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._session.can_exit():
                self._app.pop()
            return

        key = _key_string(event)
        if key is None:
            return
        self._session.handle_key(key, shift=shift)

    def update(self) -> None:
        self._session.update()

    def render(self, surface: pygame.Surface) -> None:
        snap = self._session.snapshot()
        surface.fill((12, 20, 12))

        w, h = surface.get_size()
        panel_w = max(260, w // 3)
        field_rect = pygame.Rect(10, 10, max(100, w - panel_w - 30), max(100, h - 20))
        panel_rect = pygame.Rect(field_rect.right + 10, 10, panel_w, h - 20)

        self._draw_field(surface, field_rect, snap)
        self._draw_panel(surface, panel_rect, snap)

    def _draw_field(self, surface: pygame.Surface, rect: pygame.Rect, snap: DrillSnapshot) -> None:
        cfg = self._session.config
        scale = min(rect.w / cfg.field_width, rect.h / cfg.field_height)

        def to_px(x: float, y: float) -> tuple[int, int]:
            return int(rect.x + x * scale), int(rect.y + y * scale)

        field_px = pygame.Rect(rect.x, rect.y, int(cfg.field_width * scale), int(cfg.field_height * scale))
        pygame.draw.rect(surface, (34, 70, 34), field_px)
        for gx in range(0, int(cfg.field_width) + 1, 5):
            pygame.draw.line(surface, (48, 90, 48), to_px(gx, 0), to_px(gx, cfg.field_height), 1)
        for gy in range(0, int(cfg.field_height) + 1, 5):
            pygame.draw.line(surface, (48, 90, 48), to_px(0, gy), to_px(cfg.field_width, gy), 1)
        pygame.draw.rect(surface, (200, 210, 190), field_px, 2)

        marker_r = max(3, int(0.8 * scale))
        start = cfg.formation.start_position
        pygame.draw.circle(surface, (0, 170, 0), to_px(start.x, start.y), marker_r, 2)
        for cp in snap.checkpoints:
            color = (240, 220, 60) if cp.passed else (170, 0, 0)
            pygame.draw.circle(surface, color, to_px(cp.target.x, cp.target.y), marker_r, 2)
        final = cfg.final_position
        pygame.draw.circle(surface, (0, 0, 170), to_px(final.x, final.y), marker_r, 2)

        for entity in cfg.entities:
            size = max(4, int(entity.radius * 2 * scale))
            box = pygame.Rect(0, 0, size, size)
            box.center = to_px(entity.position.x, entity.position.y)
            pygame.draw.rect(surface, (0, 153, 255) if entity.name != "Commander" else (0, 102, 204), box)

        member_r = max(2, int(cfg.formation.member_radius * scale))
        dx, dy = snap.formation.facing.vector
        for member in snap.formation.members:
            center = to_px(member.position.x, member.position.y)
            color = (255, 0, 0) if member.is_guide else (0, 45, 114)
            pygame.draw.circle(surface, color, center, member_r)
            tip = (center[0] + dx * member_r * 2, center[1] + dy * member_r * 2)
            pygame.draw.line(surface, (230, 230, 230), center, tip, 1)

    def _draw_panel(self, surface: pygame.Surface, rect: pygame.Rect, snap: DrillSnapshot) -> None:
        pygame.draw.rect(surface, (20, 34, 20), rect)
        pygame.draw.rect(surface, (120, 150, 110), rect, 1)
        text = (235, 240, 230)
        muted = (170, 185, 160)

        y = rect.y + 8
        title = self._mid_font.render(snap.title, True, text)
        surface.blit(title, (rect.x + 10, y))
        y += title.get_height() + 6

        remaining = "--:--" if snap.time_remaining_s is None else format_clock(snap.time_remaining_s)
        hud = f"Time {format_clock(snap.elapsed_s)}  Left {remaining}  Score {snap.running_score}"
        surface.blit(self._small_font.render(hud, True, text), (rect.x + 10, y))
        y += 24

        cadence_color = (80, 230, 80) if snap.on_cadence else (70, 90, 70)
        pygame.draw.circle(surface, cadence_color, (rect.x + 18, y + 8), 7)
        state = snap.formation.drill_state.label
        facing = Facing(snap.formation.facing).name.lower()
        info = f"{state} | {snap.formation.shape.value} | {facing}"
        surface.blit(self._tiny_font.render(info, True, muted), (rect.x + 32, y + 2))
        y += 24

        prompt_lines = snap.prompt.split("\n")
        if snap.phase is SessionPhase.RESULTS:
            result = attempt_result_from_session(self._session)
            prompt_lines.append(
                f"Commands {result.completed_commands}/{result.total_commands}  Misses {result.misses}"
            )
        for line in prompt_lines:
            surface.blit(self._small_font.render(line, True, text), (rect.x + 10, y))
            y += 20

        if snap.collision_pending:
            surface.blit(
                self._tiny_font.render("Blocked! Enter: continue  Shift+Enter: restart", True, (255, 120, 120)),
                (rect.x + 10, y),
            )
            y += 18
        if snap.feedback:
            for line in _wrap(snap.feedback, 40):
                surface.blit(self._tiny_font.render(line, True, (250, 230, 140)), (rect.x + 10, y))
                y += 16

        y += 6
        progress = self._session.command_list()
        first = max(0, min(snap.completed_commands - 3, len(progress) - 10))
        for item in progress[first : first + 10]:
            color = {"completed": muted, "active": (255, 255, 255)}.get(item.status, (120, 130, 115))
            label = f"{item.command.id + 1}. {item.command.name} [{item.command.display_key}]"
            surface.blit(self._tiny_font.render(label, True, color), (rect.x + 10, y))
            y += 16
            if y > rect.bottom - 20:
                break

        hint = self._tiny_font.render(snap.input_hint, True, muted)
        surface.blit(hint, (rect.x + 10, rect.bottom - hint.get_height() - 4))


def _key_string(event: pygame.event.Event) -> str | None:
    named = _NAMED_KEYS.get(event.key)
    if named is not None:
        return named
    uni = getattr(event, "unicode", "") or ""
    if len(uni) == 1 and uni.isprintable():
        return uni
    name = pygame.key.name(event.key)
    return name if len(name) == 1 else None


def _wrap(text: str, width: int) -> list[str]:
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = word if not current else f"{current} {word}"
        if len(candidate) > width and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def default_mode() -> DrillMode:
    raw = os.environ.get(MODE_ENV, "").strip().lower()
    try:
        return DrillMode(raw) if raw else DrillMode.PRACTICE
    except ValueError:
        logger.warning("ignoring unknown %s=%r", MODE_ENV, raw)
        return DrillMode.PRACTICE


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    configure_logging()
    pygame.init()

    pygame.display.set_caption("Drill Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    real_clock = RealClock()

    def open_drill(mode: DrillMode) -> None:
        app.push(DrillScreen(app, session_factory=lambda: build_drill_session(clock=real_clock, mode=mode)))

    preferred = default_mode()
    other = DrillMode.EVALUATION if preferred is DrillMode.PRACTICE else DrillMode.PRACTICE
    main_items = [
        MenuItem(f"{preferred.value.title()} Drill", lambda: open_drill(preferred)),
        MenuItem(f"{other.value.title()} Drill", lambda: open_drill(other)),
        MenuItem("Quit", app.quit),
    ]
    app.push(MenuScreen(app, "Drill Trainer", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.update()
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0

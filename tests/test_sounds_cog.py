"""Tests for the sound board views and the sounds cog wiring."""

import asyncio
from unittest.mock import AsyncMock, Mock

import discord

from soundboard.cogs.sounds import (
    SOUNDS_PER_PAGE,
    DashboardRegistry,
    DeleteConfirmView,
    SoundBoardView,
    SoundButton,
    SoundsCog,
)

GUILD = 42


def make_sounds(count: int) -> list[dict]:
    return [
        {"id": n, "title": f"Sound {n} - Instant Sound Button | Myinstants", "sound_url": f"u{n}"}
        for n in range(count)
    ]


def sound_buttons(view) -> list[SoundButton]:
    return [item for item in view.children if isinstance(item, SoundButton)]


def tracked_view(cog, sounds, mode="play") -> SoundBoardView:
    view = SoundBoardView(cog, GUILD, sounds, mode=mode)
    view.message = Mock(edit=AsyncMock())
    return view


def not_found() -> discord.NotFound:
    return discord.NotFound(Mock(status=404, reason="Not Found"), "Unknown Message")


def make_cog(sounds: list[dict]) -> SoundsCog:
    bot = Mock()
    bot.sounds.list = AsyncMock(return_value=sounds)
    bot.sounds.remove = AsyncMock(return_value=True)
    return SoundsCog(bot)


class TestSoundBoardView:

    async def test_first_page(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(45))

        buttons = sound_buttons(view)
        assert len(buttons) == SOUNDS_PER_PAGE
        assert buttons[0].label == "1. Sound 0"
        assert view.previous_page.disabled
        assert not view.next_page.disabled
        assert view.build_embed().footer.text == "Page 1/3 • 45 sound(s)"

    async def test_last_page(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(45), page=2)

        buttons = sound_buttons(view)
        assert [b.sound_id for b in buttons] == [40, 41, 42, 43, 44]
        assert buttons[0].label.startswith("41.")
        assert view.next_page.disabled
        assert not view.previous_page.disabled

    async def test_page_is_clamped(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(3), page=7)

        assert view.page == 0

    async def test_empty_board(self):
        view = SoundBoardView(Mock(), GUILD, [])

        assert sound_buttons(view) == []
        assert "No sounds to show yet" in view.build_embed().description

    async def test_long_titles_fit_button_label(self):
        sounds = [{"id": 1, "title": "x" * 200, "sound_url": "u"}]

        assert len(sound_buttons(SoundBoardView(Mock(), GUILD, sounds))[0].label) == 80

    async def test_next_page_edits_in_place(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(45))
        interaction = Mock()
        interaction.response.edit_message = AsyncMock()

        await view.next_page.callback(interaction)

        assert view.page == 1
        assert sound_buttons(view)[0].label.startswith("21.")
        interaction.response.edit_message.assert_awaited_once()
        assert interaction.response.edit_message.await_args.kwargs["view"] is view

    async def test_render_keeps_page_and_navigation(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(45), page=1)

        view.render(make_sounds(30))

        assert view.page == 1
        assert [b.sound_id for b in sound_buttons(view)] == list(range(20, 30))
        assert view.next_page.disabled
        assert view.previous_page in view.children

    async def test_render_clamps_page_when_sounds_shrink(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(45), page=2)

        view.render(make_sounds(5))

        assert view.page == 0
        assert len(sound_buttons(view)) == 5

    async def test_delete_mode(self):
        view = SoundBoardView(Mock(), GUILD, make_sounds(3), mode="delete")

        assert all(b.style is discord.ButtonStyle.danger for b in sound_buttons(view))
        assert view.build_embed().title == "🗑️ Delete Sound"

    async def test_delete_mode_button_asks_for_confirmation(self):
        cog = Mock()
        cog.confirm_delete = AsyncMock()
        view = SoundBoardView(cog, GUILD, make_sounds(3), mode="delete")
        interaction = Mock()

        await sound_buttons(view)[1].callback(interaction)

        cog.confirm_delete.assert_awaited_once_with(interaction, 1)
        cog.play_saved_sound.assert_not_called()

    async def test_timeout_untracks_dashboard(self):
        cog = make_cog([])
        view = tracked_view(cog, make_sounds(2))
        cog.dashboards.track(GUILD, view)

        await view.on_timeout()

        assert cog.dashboards.views(GUILD) == []


class TestDashboardRegistry:

    async def test_refresh_rerenders_tracked_dashboards(self):
        registry = DashboardRegistry()
        view = tracked_view(Mock(), make_sounds(2))
        registry.track(GUILD, view)

        await registry.refresh(GUILD, make_sounds(3))

        assert len(sound_buttons(view)) == 3
        view.message.edit.assert_awaited_once()
        assert view.message.edit.await_args.kwargs["view"] is view
        assert view.message.edit.await_args.kwargs["embed"].footer.text == "Page 1/1 • 3 sound(s)"

    async def test_refresh_only_touches_that_guild(self):
        registry = DashboardRegistry()
        ours, theirs = tracked_view(Mock(), []), tracked_view(Mock(), [])
        registry.track(GUILD, ours)
        registry.track(GUILD + 1, theirs)

        await registry.refresh(GUILD, make_sounds(1))

        ours.message.edit.assert_awaited_once()
        theirs.message.edit.assert_not_awaited()

    async def test_deleted_message_is_pruned(self):
        registry = DashboardRegistry()
        gone, alive = tracked_view(Mock(), []), tracked_view(Mock(), [])
        gone.message.edit.side_effect = not_found()
        registry.track(GUILD, gone)
        registry.track(GUILD, alive)

        await registry.refresh(GUILD, make_sounds(1))

        assert registry.views(GUILD) == [alive]
        assert gone.is_finished()
        alive.message.edit.assert_awaited_once()

    async def test_keeps_at_most_ten_per_guild(self):
        registry = DashboardRegistry()
        views = [tracked_view(Mock(), []) for _ in range(12)]
        for view in views:
            registry.track(GUILD, view)

        assert registry.views(GUILD) == views[2:]
        assert views[0].is_finished()
        assert not views[2].is_finished()

    async def test_tracking_twice_does_not_duplicate(self):
        registry = DashboardRegistry()
        view = tracked_view(Mock(), [])

        registry.track(GUILD, view)
        registry.track(GUILD, view)

        assert registry.views(GUILD) == [view]


class TestDashboardRefresh:

    async def test_confirmed_delete_refreshes_dashboards(self):
        remaining = make_sounds(1)
        cog = make_cog(remaining)
        dashboard = tracked_view(cog, make_sounds(2))
        cog.dashboards.track(GUILD, dashboard)
        interaction = Mock(guild_id=GUILD)
        interaction.response.edit_message = AsyncMock()

        confirm = DeleteConfirmView(cog, make_sounds(2)[1])
        await confirm.confirm.callback(interaction)

        cog.bot.sounds.remove.assert_awaited_once_with(GUILD, 1)
        assert [b.sound_id for b in sound_buttons(dashboard)] == [0]
        dashboard.message.edit.assert_awaited_once()

    async def test_missing_sound_does_not_refresh(self):
        cog = make_cog([])
        cog.bot.sounds.remove = AsyncMock(return_value=False)
        dashboard = tracked_view(cog, make_sounds(1))
        cog.dashboards.track(GUILD, dashboard)
        interaction = Mock(guild_id=GUILD)
        interaction.response.edit_message = AsyncMock()

        await DeleteConfirmView(cog, make_sounds(1)[0]).confirm.callback(interaction)

        dashboard.message.edit.assert_not_awaited()

    async def test_refresh_without_dashboards_skips_database(self):
        cog = make_cog([])

        await cog.refresh_dashboards(GUILD)

        cog.bot.sounds.list.assert_not_awaited()

    async def test_refresh_survives_database_failure(self):
        cog = make_cog([])
        cog.bot.sounds.list = AsyncMock(side_effect=RuntimeError("database is locked"))
        dashboard = tracked_view(cog, make_sounds(1))
        cog.dashboards.track(GUILD, dashboard)

        await cog.refresh_dashboards(GUILD)

        dashboard.message.edit.assert_not_awaited()

    async def test_sounds_command_tracks_dashboard(self):
        cog = make_cog(make_sounds(2))
        message = Mock(edit=AsyncMock())
        interaction = Mock(guild_id=GUILD)
        interaction.response.send_message = AsyncMock()
        interaction.original_response = AsyncMock(return_value=message)

        await cog.sounds_dashboard.callback(cog, interaction)

        [view] = cog.dashboards.views(GUILD)
        assert view.message is message
        assert view.mode == "play"
        assert interaction.response.send_message.await_args.kwargs["ephemeral"] is False

    async def test_delete_without_number_opens_delete_dashboard(self):
        cog = make_cog(make_sounds(2))
        interaction = Mock(guild_id=GUILD)
        interaction.response.send_message = AsyncMock()
        interaction.original_response = AsyncMock(return_value=Mock(edit=AsyncMock()))

        await cog.delete.callback(cog, interaction)

        [view] = cog.dashboards.views(GUILD)
        assert view.mode == "delete"
        assert interaction.response.send_message.await_args.kwargs["ephemeral"] is True


class TestBackgroundTasks:

    async def test_spawned_tasks_are_held_until_done(self):
        cog = make_cog([])
        release = asyncio.Event()

        task = cog._spawn(release.wait())
        assert task in cog._background_tasks

        release.set()
        await task
        await asyncio.sleep(0)
        assert cog._background_tasks == set()


class TestVoiceStateListener:

    async def test_only_own_voice_state_is_forwarded(self):
        bot = Mock()
        bot.user.id = 1
        cog = SoundsCog(bot)
        before, after = Mock(), Mock()

        await cog.on_voice_state_update(Mock(id=2), before, after)
        bot.transport.handle_voice_state.assert_not_called()

        member = Mock(id=1)
        member.guild.id = 99
        await cog.on_voice_state_update(member, before, after)
        bot.transport.handle_voice_state.assert_called_once_with(99, before, after)

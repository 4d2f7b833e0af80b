#!/usr/bin/env python3
"""Discord bot running provably fair battle royale giveaways."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import Callable, Sequence
from typing import Final

import boto3
import discord
from discord import app_commands

from royale_bot import (
    AdmissionRequest,
    CollaboratorUnavailable,
    CompositeReporter,
    InvalidValueError,
    LoggingReporter,
    ParticipantCount,
    ProgressReporter,
    ProgressSnapshot,
    RoyaleConfig,
    RoyaleEngine,
    RoyaleError,
    RoyaleStorage,
    SetupNotFound,
    SnapshotKind,
    Tournament,
    TournamentState,
    build_setup,
    parse_role_entries,
)
from royale_bot.models import parse_iso
from royale_bot.reporter import participant_sample

log = logging.getLogger("royale-bot")

START_COMMAND: Final[str] = "$start"
JOIN_PREFIX: Final[str] = "royale-join:"
VERIFY_PREFIX: Final[str] = "royale-verify:"
FIELD_VALUE_LIMIT: Final[int] = 1024
_ROLE_MENTION = re.compile(r"<@&(\d+)>")


# ---------- Rendering ----------
def discord_timestamp(iso_value: str, style: str = "R") -> str:
    return f"<t:{int(parse_iso(iso_value).timestamp())}:{style}>"


def participants_description(
    participants: Sequence[ParticipantCount], *, limit: int = FIELD_VALUE_LIMIT
) -> str:
    """Bullet list of live entry counts that fits in one embed field."""
    if not participants:
        return "No participants yet."
    lines: list[str] = []
    used = 0
    for index, participant in enumerate(participants):
        noun = "entry" if participant.count == 1 else "entries"
        line = f"• <@{participant.participant_id}> - {participant.count} {noun}"
        remaining = len(participants) - index
        # keep room for the overflow marker unless this is the last line
        reserve = len(f"\n…and {remaining - 1} more") if remaining > 1 else 0
        if used + len(line) + reserve > limit:
            lines.append(f"…and {remaining} more")
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)


def build_giveaway_embed(
    tournament: Tournament, participants: Sequence[ParticipantCount] | None = None
) -> discord.Embed:
    collecting = tournament.state is TournamentState.COLLECTING
    if participants is None:
        participants = participant_sample(
            entry.participant_id for entry in tournament.entries
        )
    embed = discord.Embed(
        title=f"Giveaway - {tournament.setup.name}",
        description=tournament.setup.description
        or "Battle Royale giveaway. Click Join to enter!",
        colour=discord.Colour.green() if collecting else discord.Colour.dark_grey(),
    )
    embed.add_field(name="Entries", value=str(len(tournament.entries)), inline=True)
    embed.add_field(name="Collecting", value="Yes" if collecting else "No", inline=True)
    embed.add_field(
        name="Ends At",
        value=discord_timestamp(tournament.collect_ends_at),
        inline=True,
    )
    embed.add_field(
        name="Server seed commitment (SHA-256)",
        value=f"`{tournament.server_seed_hash}`",
        inline=False,
    )
    embed.add_field(
        name="Participants (sample)",
        value=participants_description(participants),
        inline=False,
    )
    embed.set_footer(text=f"Giveaway {tournament.tournament_id} - live updating")
    return embed


def build_progress_embed(snapshot: ProgressSnapshot) -> discord.Embed:
    embed = discord.Embed(title=snapshot.round_label, description=snapshot.detail)
    embed.add_field(
        name="Remaining entries", value=str(snapshot.survivor_count), inline=True
    )
    if snapshot.progress_percent is not None:
        embed.add_field(
            name="Round progress", value=f"{snapshot.progress_percent}%", inline=True
        )
    embed.add_field(
        name="Participants (sample)",
        value=participants_description(snapshot.participants),
        inline=False,
    )
    return embed


def build_step_result_embed(snapshot: ProgressSnapshot) -> discord.Embed:
    embed = discord.Embed(title=snapshot.round_label, description=snapshot.detail)
    embed.add_field(
        name="Remaining entries", value=str(snapshot.survivor_count), inline=True
    )
    embed.add_field(
        name="Participants (sample)",
        value=participants_description(snapshot.participants),
        inline=False,
    )
    return embed


def build_winner_embed(tournament: Tournament) -> discord.Embed:
    winner = tournament.winner
    if winner is None:
        raise ValueError(f"Tournament {tournament.tournament_id} has no winner")
    embed = discord.Embed(
        title="🏆 Winner",
        description=(
            f"<@{winner.participant_id}> wins with entry {winner.entry_id}\n"
            f"Float: {winner.fairness_value}"
        ),
        colour=discord.Colour.gold(),
        timestamp=parse_iso(tournament.finished_at) if tournament.finished_at else None,
    )
    embed.add_field(name="ClientSeed1", value=f"{tournament.client_seed1}", inline=False)
    embed.add_field(name="ClientSeed2", value=f"{tournament.client_seed2}", inline=False)
    embed.add_field(
        name="ServerSeed (revealed)", value=f"`{tournament.server_seed}`", inline=False
    )
    embed.add_field(
        name="Commitment", value=f"`{tournament.server_seed_hash}`", inline=False
    )
    embed.set_footer(
        text=f"Entry index {winner.sequence_index} of {len(tournament.entries)}"
    )
    return embed


def build_ended_embed(tournament: Tournament) -> discord.Embed:
    embed = discord.Embed(
        title=f"Giveaway - {tournament.setup.name} (Ended)",
        description=(
            f"Winner: <@{tournament.winner.participant_id}>"
            if tournament.winner
            else "No entries - no winner."
        ),
        colour=discord.Colour.dark_grey(),
    )
    embed.add_field(
        name="Total entries", value=str(len(tournament.entries)), inline=True
    )
    if tournament.winner:
        embed.add_field(
            name="Winner entry", value=tournament.winner.entry_id, inline=True
        )
    return embed


def build_status_embed(tournament: Tournament) -> discord.Embed:
    embed = discord.Embed(
        title=f"Giveaway {tournament.tournament_id}",
        description=f"Setup: {tournament.setup.name}",
    )
    embed.add_field(name="State", value=tournament.state.value, inline=True)
    embed.add_field(name="Entries", value=str(len(tournament.entries)), inline=True)
    embed.add_field(
        name="Participants", value=str(len(tournament.entrant_totals)), inline=True
    )
    embed.add_field(
        name="Collecting ends",
        value=discord_timestamp(tournament.collect_ends_at, "F"),
        inline=False,
    )
    if tournament.state is TournamentState.RUNNING:
        embed.add_field(
            name="Remaining entries", value=str(tournament.survivor_count), inline=True
        )
    if tournament.winner is not None:
        embed.add_field(
            name="Winner",
            value=f"<@{tournament.winner.participant_id}> ({tournament.winner.entry_id})",
            inline=False,
        )
    return embed


def can_manage(user: discord.abc.User, tournament: Tournament) -> bool:
    permissions = getattr(user, "guild_permissions", None)
    if permissions is not None and permissions.administrator:
        return True
    return tournament.created_by is not None and user.id == tournament.created_by


def normalize_role_mentions(raw: str) -> str:
    return _ROLE_MENTION.sub(r"\1", raw)


def parse_start_command(content: str) -> str | None:
    """Return the setup reference from ``$start <setup>``; ``""`` when missing."""
    parts = content.strip().split()
    if not parts or parts[0] != START_COMMAND:
        return None
    return parts[1] if len(parts) > 1 else ""


# ---------- Views ----------
class RoyaleView(discord.ui.View):
    def __init__(
        self, runtime: RoyaleRuntime, tournament_id: str, *, collecting: bool = True
    ) -> None:
        super().__init__(timeout=None)
        self.runtime = runtime
        self.tournament_id = tournament_id
        self.join.custom_id = f"{JOIN_PREFIX}{tournament_id}"
        self.join.disabled = not collecting
        self.verify.custom_id = f"{VERIFY_PREFIX}{tournament_id}"

    @discord.ui.button(label="Join Giveaway", style=discord.ButtonStyle.success)
    async def join(  # type: ignore[override]
        self, interaction: discord.Interaction, _button: discord.ui.Button
    ) -> None:
        await self.runtime.handle_join(interaction, self.tournament_id)

    @discord.ui.button(label="Verify / Run", style=discord.ButtonStyle.secondary)
    async def verify(  # type: ignore[override]
        self, interaction: discord.Interaction, _button: discord.ui.Button
    ) -> None:
        await self.runtime.handle_verify(interaction, self.tournament_id)


class SeedsModal(discord.ui.Modal):
    def __init__(self, runtime: RoyaleRuntime, tournament_id: str) -> None:
        super().__init__(title="Provide Seeds (clientSeed1, clientSeed2)")
        self.runtime = runtime
        self.tournament_id = tournament_id
        self.seed1_input = discord.ui.TextInput(
            label="clientSeed1 (block hash or seed)",
            max_length=200,
        )
        self.seed2_input = discord.ui.TextInput(
            label="clientSeed2 (creator input)",
            max_length=200,
        )
        self.add_item(self.seed1_input)
        self.add_item(self.seed2_input)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.runtime.handle_seeds(
            interaction,
            self.tournament_id,
            self.seed1_input.value,
            self.seed2_input.value,
        )


# ---------- Reporting ----------
class DiscordProgressReporter:
    """Mirrors engine snapshots onto the giveaway message and channel."""

    def __init__(
        self,
        bot: discord.Client,
        lookup: Callable[[str], Tournament],
        view_factory: Callable[[str, bool], discord.ui.View],
    ) -> None:
        self._bot = bot
        self._lookup = lookup
        self._view_factory = view_factory

    async def _channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self._bot.get_channel(channel_id)
        if channel is None:
            channel = await self._bot.fetch_channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise CollaboratorUnavailable(f"Channel {channel_id} is not messageable")
        return channel

    async def report(self, tournament_id: str, snapshot: ProgressSnapshot) -> None:
        tournament = self._lookup(tournament_id)
        if tournament.channel_id is None:
            log.debug("No channel bound for %s; skipping report", tournament_id)
            return
        try:
            channel = await self._channel(tournament.channel_id)
            message = (
                channel.get_partial_message(tournament.message_id)  # type: ignore[attr-defined]
                if tournament.message_id
                else None
            )
            await self._render(tournament, snapshot, channel, message)
        except discord.HTTPException as exc:
            raise CollaboratorUnavailable(
                f"Discord request failed for {tournament_id}: {exc}"
            ) from exc

    async def _render(
        self,
        tournament: Tournament,
        snapshot: ProgressSnapshot,
        channel: discord.abc.Messageable,
        message: discord.PartialMessage | None,
    ) -> None:
        tournament_id = tournament.tournament_id
        kind = snapshot.kind
        if kind in (SnapshotKind.COLLECTING, SnapshotKind.LOCKED):
            if message is not None:
                await message.edit(
                    embed=build_giveaway_embed(tournament, snapshot.participants),
                    view=self._view_factory(
                        tournament_id, kind is SnapshotKind.COLLECTING
                    ),
                )
            if kind is SnapshotKind.LOCKED:
                await channel.send(f"Collection ended. {snapshot.detail}")
        elif kind is SnapshotKind.EMPTY:
            if message is not None:
                await message.edit(embed=build_ended_embed(tournament), view=None)
            await channel.send(snapshot.detail)
        elif kind is SnapshotKind.STARTING:
            await channel.send(snapshot.detail)
        elif kind is SnapshotKind.FRAME:
            if message is not None:
                await message.edit(embed=build_progress_embed(snapshot))
        elif kind is SnapshotKind.STEP_RESULT:
            if snapshot.phase == "round":
                await channel.send(embed=build_step_result_embed(snapshot))
        elif kind is SnapshotKind.WINNER:
            await channel.send(embed=build_winner_embed(tournament))
            if message is not None:
                await message.edit(embed=build_ended_embed(tournament), view=None)


# ---------- Runtime ----------
class RoyaleRuntime:
    def __init__(self, config: RoyaleConfig, *, table=None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.message_content = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        if table is None:
            dynamodb = boto3.resource("dynamodb", region_name=config.aws_region)
            table = dynamodb.Table(config.table_name)
        self.storage = RoyaleStorage(table)
        self.reporter: ProgressReporter
        if config.shadow_mode:
            self.reporter = LoggingReporter()
        else:
            self.reporter = CompositeReporter(
                LoggingReporter(),
                DiscordProgressReporter(self.bot, self._lookup, self._make_view),
            )
        self.engine = RoyaleEngine(
            self.storage,
            self.reporter,
            timing=config.timing,
            server_seed=config.server_seed,
            member_roles=self.member_role_ids,
        )
        self._ready = False
        self._register_events()
        self._register_commands()

    def _lookup(self, tournament_id: str) -> Tournament:
        return self.engine.get_state(tournament_id)

    def _make_view(self, tournament_id: str, collecting: bool) -> RoyaleView:
        return RoyaleView(self, tournament_id, collecting=collecting)

    async def member_role_ids(
        self, tournament: Tournament, participant_id: str
    ) -> list[str]:
        channel = (
            self.bot.get_channel(tournament.channel_id)
            if tournament.channel_id
            else None
        )
        guild = getattr(channel, "guild", None)
        if guild is None:
            raise CollaboratorUnavailable(
                f"No guild available for tournament {tournament.tournament_id}"
            )
        member = guild.get_member(int(participant_id))
        if member is None:
            try:
                member = await guild.fetch_member(int(participant_id))
            except discord.HTTPException as exc:
                raise CollaboratorUnavailable(
                    f"Cannot fetch member {participant_id}: {exc}"
                ) from exc
        return [str(role.id) for role in member.roles]

    # ----- Interaction handlers -----
    async def handle_join(
        self, interaction: discord.Interaction, tournament_id: str
    ) -> None:
        user = interaction.user
        try:
            future = self.engine.admit(
                AdmissionRequest(
                    tournament_id=tournament_id,
                    participant_id=str(user.id),
                    display_name=user.display_name,
                )
            )
        except RoyaleError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            result = await future
        except Exception:  # pylint: disable=broad-except
            log.exception("Join failed for %s in %s", user.id, tournament_id)
            content = "Entry failed, please try again."
        else:
            if result.accepted:
                content = (
                    f"You joined the giveaway with {result.entries_granted} entries "
                    f"({result.participant_total} total)."
                )
            else:
                content = f"Entry not accepted: {result.reason}"
        try:
            await interaction.followup.send(content, ephemeral=True)
        except discord.HTTPException as exc:
            log.warning("Join follow-up failed for %s: %s", user.id, exc)

    async def handle_verify(
        self, interaction: discord.Interaction, tournament_id: str
    ) -> None:
        try:
            tournament = self.engine.get_state(tournament_id)
        except RoyaleError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        if not can_manage(interaction.user, tournament):
            await interaction.response.send_message(
                "Only the giveaway creator or an administrator can provide seeds.",
                ephemeral=True,
            )
            return
        if tournament.is_finished:
            await interaction.response.send_message(
                "Giveaway already finished.", ephemeral=True
            )
            return
        await interaction.response.send_modal(SeedsModal(self, tournament_id))

    async def handle_seeds(
        self,
        interaction: discord.Interaction,
        tournament_id: str,
        client_seed1: str,
        client_seed2: str,
    ) -> None:
        try:
            await self.engine.reveal_seeds(tournament_id, client_seed1, client_seed2)
        except RoyaleError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        await interaction.response.send_message(
            "Seeds received. Running Battle Royale now...", ephemeral=True
        )

    async def start_giveaway(self, message: discord.Message, setup_ref: str) -> None:
        setup = self.storage.find_setup(setup_ref)
        if setup is None:
            raise SetupNotFound(setup_ref)
        tournament_id = await self.engine.create_tournament(
            setup, created_by=message.author.id, channel_id=message.channel.id
        )
        tournament = self.engine.get_state(tournament_id)
        view = self._make_view(tournament_id, True)
        sent = await message.channel.send(
            embed=build_giveaway_embed(tournament), view=view
        )
        await self.engine.attach_message(tournament_id, message.channel.id, sent.id)
        self.bot.add_view(view, message_id=sent.id)
        await message.reply(
            f'Giveaway started with setup "{setup.name}". Message posted.'
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        setup_ref = parse_start_command(message.content)
        if setup_ref is None:
            return
        permissions = getattr(message.author, "guild_permissions", None)
        if permissions is None or not permissions.administrator:
            await message.reply("Only administrators can start a giveaway.")
            return
        if not setup_ref:
            await message.reply(f"Usage: {START_COMMAND} {{setupNameOrId}}")
            return
        try:
            await self.start_giveaway(message, setup_ref)
        except SetupNotFound:
            await message.reply(
                f'Setup "{setup_ref}" not found. Create it with /royale-setup-create.'
            )
        except discord.HTTPException as exc:
            log.exception("Failed to post giveaway for %s: %s", setup_ref, exc)

    # ----- Wiring -----
    def _register_events(self) -> None:
        bot = self.bot

        @bot.event
        async def on_ready() -> None:  # pragma: no cover - Discord lifecycle hook
            if self._ready:
                return
            self._ready = True
            if self.config.guild_id is not None:
                guild = discord.Object(id=self.config.guild_id)
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
            else:
                await self.tree.sync()
            resumed = await self.engine.resume()
            for tournament in self.engine.active_tournaments():
                if tournament.message_id is None:
                    continue
                view = self._make_view(
                    tournament.tournament_id,
                    tournament.state is TournamentState.COLLECTING,
                )
                bot.add_view(view, message_id=tournament.message_id)
            log.info(
                "Royale bot ready as %s (%s); resumed %s giveaway(s)",
                bot.user,
                getattr(bot.user, "id", None),
                len(resumed),
            )

        @bot.event
        async def on_message(message: discord.Message) -> None:
            await self.on_message(message)

    def _register_commands(self) -> None:
        tree = self.tree

        @tree.command(
            name="royale-setup-create", description="Create a giveaway setup"
        )
        @app_commands.describe(
            name="Setup name used with $start",
            collect_seconds="How long entries are collected",
            base_entries="Entries every participant receives",
            role_entries="Role bonuses such as @VIP:5, @Booster:3",
            description="Text shown on the giveaway message",
        )
        @app_commands.default_permissions(administrator=True)
        @app_commands.guild_only()
        async def setup_create(
            interaction: discord.Interaction,
            name: str,
            collect_seconds: int = 30,
            base_entries: int = 1,
            role_entries: str = "",
            description: str = "",
        ) -> None:
            try:
                setup = build_setup(
                    setup_id=f"setup-{uuid.uuid4().hex[:8]}",
                    name=name,
                    description=description,
                    collect_duration_seconds=collect_seconds,
                    base_entries=base_entries,
                    role_entries=parse_role_entries(
                        normalize_role_mentions(role_entries)
                    ),
                    updated_by=interaction.user.id,
                )
            except InvalidValueError as exc:
                await interaction.response.send_message(str(exc), ephemeral=True)
                return
            if self.storage.find_setup(setup.name) is not None:
                await interaction.response.send_message(
                    f'A setup named "{setup.name}" already exists.', ephemeral=True
                )
                return
            self.storage.save_setup(setup)
            await interaction.response.send_message(
                f'Setup "{setup.name}" saved ({setup.setup_id}).', ephemeral=True
            )

        @tree.command(name="royale-setup-list", description="List giveaway setups")
        @app_commands.default_permissions(administrator=True)
        async def setup_list(interaction: discord.Interaction) -> None:
            setups = self.storage.list_setups()
            if not setups:
                await interaction.response.send_message(
                    "No setups configured.", ephemeral=True
                )
                return
            lines = []
            for setup in setups[:25]:
                roles = ", ".join(
                    f"<@&{role.role_id}>={role.entries}" for role in setup.role_entries
                )
                lines.append(
                    f"• **{setup.name}** (`{setup.setup_id}`) - "
                    f"{setup.collect_duration_seconds}s, base {setup.base_entries}"
                    + (f", roles {roles}" if roles else "")
                )
            await interaction.response.send_message("\n".join(lines), ephemeral=True)

        @tree.command(name="royale-setup-delete", description="Delete a giveaway setup")
        @app_commands.default_permissions(administrator=True)
        async def setup_delete(interaction: discord.Interaction, setup: str) -> None:
            found = self.storage.find_setup(setup)
            if found is None or not self.storage.delete_setup(found.setup_id):
                await interaction.response.send_message(
                    f'Setup "{setup}" not found.', ephemeral=True
                )
                return
            await interaction.response.send_message(
                f'Setup "{found.name}" deleted.', ephemeral=True
            )

        @tree.command(
            name="royale-close", description="Close collection for a giveaway early"
        )
        async def close_command(
            interaction: discord.Interaction, giveaway_id: str
        ) -> None:
            try:
                tournament = self.engine.get_state(giveaway_id)
                if not can_manage(interaction.user, tournament):
                    await interaction.response.send_message(
                        "Only the giveaway creator or an administrator can close it.",
                        ephemeral=True,
                    )
                    return
                tournament = await self.engine.close_collection(giveaway_id)
            except RoyaleError as exc:
                await interaction.response.send_message(str(exc), ephemeral=True)
                return
            await interaction.response.send_message(
                f"Collection closed with {len(tournament.entries)} entries.",
                ephemeral=True,
            )

        @tree.command(name="royale-status", description="Show a giveaway's state")
        async def status_command(
            interaction: discord.Interaction, giveaway_id: str
        ) -> None:
            try:
                tournament = self.engine.get_state(giveaway_id)
            except RoyaleError as exc:
                await interaction.response.send_message(str(exc), ephemeral=True)
                return
            await interaction.response.send_message(
                embed=build_status_embed(tournament), ephemeral=True
            )

    async def run(self) -> None:
        try:
            async with self.bot:
                await self.bot.start(self.config.discord_token)
        finally:
            await self.engine.shutdown()

    @classmethod
    def create(cls) -> RoyaleRuntime:
        return cls(RoyaleConfig.load())


async def main() -> None:  # pragma: no cover - CLI entry point
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    runtime = RoyaleRuntime.create()
    if runtime.config.shadow_mode:
        log.info("Royale bot running in SHADOW mode; progress is only logged")
    await runtime.run()


if __name__ == "__main__":
    asyncio.run(main())

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_COUNTER = dict(nullable=False, server_default="0")


def upgrade():
    op.create_table(
        "player",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("avatar", sa.String(), nullable=True),
    )
    op.create_table(
        "match",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "creation_date",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("home_team_ids", sa.JSON(), nullable=False),
        sa.Column("away_team_ids", sa.JSON(), nullable=False),
        sa.Column("home_team", sa.JSON(), nullable=False),
        sa.Column("away_team", sa.JSON(), nullable=False),
        sa.Column("final_score", sa.JSON(), nullable=False),
        sa.Column("toto", sa.Integer(), nullable=False),
    )
    op.create_index("ix_match_match_date_id", "match", ["match_date", "id"])

    op.create_table(
        "match_member",
        sa.Column(
            "match_id",
            sa.String(),
            sa.ForeignKey("match.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("player_id", sa.String(), sa.ForeignKey("player.id"), primary_key=True),
    )
    op.create_index("ix_match_member_player_id", "match_member", ["player_id"])

    op.create_table(
        "player_stats",
        sa.Column("player_id", sa.String(), sa.ForeignKey("player.id"), primary_key=True),
        sa.Column("total_matches", sa.Integer(), **_COUNTER),
        sa.Column("total_wins", sa.Integer(), **_COUNTER),
        sa.Column("total_losses", sa.Integer(), **_COUNTER),
        sa.Column("total_goals_for", sa.Integer(), **_COUNTER),
        sa.Column("total_goals_against", sa.Integer(), **_COUNTER),
        sa.Column("total_flawless_victories", sa.Integer(), **_COUNTER),
        sa.Column("total_humiliations", sa.Integer(), **_COUNTER),
        sa.Column("total_suckerpunches", sa.Integer(), **_COUNTER),
        sa.Column("total_knockouts", sa.Integer(), **_COUNTER),
        sa.Column("win_streak", sa.Integer(), **_COUNTER),
        sa.Column("lose_streak", sa.Integer(), **_COUNTER),
        sa.Column("highest_win_streak", sa.Integer(), **_COUNTER),
        sa.Column("highest_lose_streak", sa.Integer(), **_COUNTER),
        sa.Column("date_last_match", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_last_win", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_last_lose", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_last_flawless_victory", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_last_humiliation", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modification_date", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "player_period_stats",
        sa.Column("player_id", sa.String(), sa.ForeignKey("player.id"), primary_key=True),
        sa.Column("period_type", sa.String(10), primary_key=True),
        sa.Column("period_id", sa.String(16), primary_key=True),
        sa.Column("matches_played", sa.Integer(), **_COUNTER),
        sa.Column("wins", sa.Integer(), **_COUNTER),
        sa.Column("losses", sa.Integer(), **_COUNTER),
        sa.Column("goals_for", sa.Integer(), **_COUNTER),
        sa.Column("goals_against", sa.Integer(), **_COUNTER),
        sa.Column("humiliations_inflicted", sa.Integer(), **_COUNTER),
        sa.Column("humiliations_suffered", sa.Integer(), **_COUNTER),
        sa.Column("sucker_punches_dealt", sa.Integer(), **_COUNTER),
        sa.Column("sucker_punches_received", sa.Integer(), **_COUNTER),
        sa.Column("first_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index(
        "ix_player_period_stats_period",
        "player_period_stats",
        ["period_type", "period_id"],
    )


def downgrade():
    op.drop_index("ix_player_period_stats_period", table_name="player_period_stats")
    op.drop_table("player_period_stats")
    op.drop_table("player_stats")
    op.drop_index("ix_match_member_player_id", table_name="match_member")
    op.drop_table("match_member")
    op.drop_index("ix_match_match_date_id", table_name="match")
    op.drop_table("match")
    op.drop_table("player")

"""Create promotion tables

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("ADMIN", "INSTRUCTOR", "STUDENT", name="userrole")
course_status = sa.Enum("DRAFT", "PUBLISHED", "ARCHIVED", name="coursestatus")
purchase_status = sa.Enum("PENDING", "COMPLETED", "REFUNDED", name="purchasestatus")
discount_type = sa.Enum("PERCENTAGE", "FIXED", name="discounttype")
promotion_kind = sa.Enum("COUPON", "FLASH_SALE", name="promotionkind")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("instructor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_free", sa.Boolean(), nullable=False),
        sa.Column("status", course_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_courses_id", "courses", ["id"], unique=False)
    op.create_index("idx_course_instructor_status", "courses", ["instructor_id", "status"], unique=False)

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", purchase_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_purchases_id", "purchases", ["id"], unique=False)
    op.create_index("ix_purchases_user_status", "purchases", ["user_id", "status"], unique=False)

    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("max_discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("minimum_purchase_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("applicable_course_ids", sa.JSON(), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_to", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("first_purchase_only", sa.Boolean(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("used_count >= 0", name="ck_coupon_used_count_non_negative"),
        sa.CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_coupon_usage_limit"),
        sa.CheckConstraint("valid_to > valid_from", name="ck_coupon_window"),
    )
    op.create_index("ix_coupons_id", "coupons", ["id"], unique=False)
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)
    op.create_index("ix_coupons_owner_created_at", "coupons", ["created_by_user_id", "created_at"], unique=False)

    op.create_table(
        "flash_sales",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("original_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("max_quantity", sa.Integer(), nullable=True),
        sa.Column("sold_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("show_countdown", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("sold_quantity >= 0", name="ck_flash_sale_sold_non_negative"),
        sa.CheckConstraint("max_quantity IS NULL OR sold_quantity <= max_quantity", name="ck_flash_sale_quantity_limit"),
        sa.CheckConstraint("end_date > start_date", name="ck_flash_sale_window"),
        sa.CheckConstraint("discount_price < original_price", name="ck_flash_sale_price"),
    )
    op.create_index("ix_flash_sales_id", "flash_sales", ["id"], unique=False)
    op.create_index("ix_flash_sales_course_active", "flash_sales", ["course_id", "is_active"], unique=False)

    op.create_table(
        "redemptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("promotion_kind", promotion_kind, nullable=False),
        sa.Column("promotion_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id"), nullable=True),
        sa.Column("transaction_ref", sa.String(length=100), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("final_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("promotion_kind", "promotion_id", "transaction_ref", name="uq_redemption_transaction"),
    )
    op.create_index("ix_redemptions_id", "redemptions", ["id"], unique=False)
    op.create_index(
        "ix_redemptions_promotion_user",
        "redemptions",
        ["promotion_kind", "promotion_id", "user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_redemptions_promotion_user", table_name="redemptions")
    op.drop_index("ix_redemptions_id", table_name="redemptions")
    op.drop_table("redemptions")
    op.drop_index("ix_flash_sales_course_active", table_name="flash_sales")
    op.drop_index("ix_flash_sales_id", table_name="flash_sales")
    op.drop_table("flash_sales")
    op.drop_index("ix_coupons_owner_created_at", table_name="coupons")
    op.drop_index("ix_coupons_code", table_name="coupons")
    op.drop_index("ix_coupons_id", table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_purchases_user_status", table_name="purchases")
    op.drop_index("ix_purchases_id", table_name="purchases")
    op.drop_table("purchases")
    op.drop_index("idx_course_instructor_status", table_name="courses")
    op.drop_index("ix_courses_id", table_name="courses")
    op.drop_table("courses")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (promotion_kind, discount_type, purchase_status, course_status, user_role):
        enum_type.drop(bind, checkfirst=True)

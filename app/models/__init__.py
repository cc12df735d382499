from app.models.user import User, UserRole
from app.models.course import Course, CourseStatus
from app.models.purchase import Purchase, PurchaseStatus
from app.models.coupon import Coupon, DiscountType
from app.models.flash_sale import FlashSale
from app.models.redemption import Redemption, PromotionKind

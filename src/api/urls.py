"""Main API URL router for /api/v1/."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from api.v1 import views as v1_views

router = DefaultRouter()
router.register(r"suppliers", v1_views.SupplierViewSet)
router.register(r"supplier-offers", v1_views.SupplierOfferViewSet)
router.register(r"pricing-coefficients", v1_views.PricingCoefficientViewSet)
router.register(r"products", v1_views.ProductViewSet)
router.register(r"import-templates", v1_views.ImportMappingTemplateViewSet)
router.register(r"import-jobs", v1_views.ImportJobViewSet)


app_name = "api"
urlpatterns = [
    path("", include(router.urls)),
]

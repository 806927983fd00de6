"""Tests for listing creation, edits, stock adjustment and browsing."""

import pytest
from bson.objectid import ObjectId

import catalog
from conftest import listing_attrs
from errors import AuthorizationError, InsufficientStockError, NotFoundError, ValidationError


class TestCreateListing:
    def test_availability_follows_initial_stock(self, make_listing):
        assert make_listing(stock=2)["availability"] is True
        assert make_listing(stock=0)["availability"] is False

    def test_seller_is_recorded(self, make_listing, seller):
        assert make_listing()["seller"] == seller.id

    def test_contact_for_price_clears_price(self, make_listing):
        gem = make_listing(contact_for_price=True, price=500.0)
        assert gem["contact_for_price"] is True
        assert gem["price"] is None

    @pytest.mark.parametrize("price", [None, 0, -10])
    def test_price_required_without_contact_for_price(self, db, seller, price):
        with pytest.raises(ValidationError):
            catalog.create_listing(db, seller.id, listing_attrs(price=price))

    def test_negative_stock_rejected(self, db, seller):
        with pytest.raises(ValidationError):
            catalog.create_listing(db, seller.id, listing_attrs(stock=-1))

    def test_missing_field_reported(self, db, seller):
        attrs = listing_attrs()
        del attrs["name"]
        with pytest.raises(ValidationError) as exc:
            catalog.create_listing(db, seller.id, attrs)
        assert any(e["field"] == "name" for e in exc.value.errors)

    def test_unknown_category_rejected(self, db, seller):
        with pytest.raises(ValidationError):
            catalog.create_listing(db, seller.id, listing_attrs(category="Glass"))


class TestUpdateListing:
    def test_only_owner_may_update(self, make_listing, db, other_seller):
        gem = make_listing()
        with pytest.raises(AuthorizationError):
            catalog.update_listing(db, gem["id"], other_seller, {"name": "Stolen"})

    def test_admin_may_update(self, make_listing, db, admin):
        gem = make_listing()
        assert catalog.update_listing(db, gem["id"], admin, {"origin": "Burma"})["origin"] == "Burma"

    def test_missing_listing(self, db, seller):
        with pytest.raises(NotFoundError):
            catalog.update_listing(db, str(ObjectId()), seller, {"name": "x"})

    def test_contact_for_price_true_forces_null_price(self, make_listing, db, seller):
        gem = make_listing(price=250.0)
        updated = catalog.update_listing(db, gem["id"], seller, {"contact_for_price": True, "price": 300.0})
        assert updated["contact_for_price"] is True
        assert updated["price"] is None

    def test_leaving_contact_for_price_needs_a_price(self, make_listing, db, seller):
        gem = make_listing(contact_for_price=True)
        with pytest.raises(ValidationError):
            catalog.update_listing(db, gem["id"], seller, {"contact_for_price": False})

        updated = catalog.update_listing(db, gem["id"], seller, {"contact_for_price": False, "price": 180.0})
        assert updated["contact_for_price"] is False
        assert updated["price"] == 180.0

    def test_non_positive_price_rejected(self, make_listing, db, seller):
        gem = make_listing()
        with pytest.raises(ValidationError):
            catalog.update_listing(db, gem["id"], seller, {"price": 0})
        with pytest.raises(ValidationError):
            catalog.update_listing(db, gem["id"], seller, {"price": None})

    def test_setting_price_leaves_contact_for_price(self, make_listing, db, seller):
        gem = make_listing(contact_for_price=True)
        updated = catalog.update_listing(db, gem["id"], seller, {"price": 90.0})
        assert updated["contact_for_price"] is False
        assert updated["price"] == 90.0

    def test_stock_patch_recomputes_availability(self, make_listing, db, seller):
        gem = make_listing(stock=4)
        assert catalog.update_listing(db, gem["id"], seller, {"stock": 0})["availability"] is False
        assert catalog.update_listing(db, gem["id"], seller, {"stock": 2})["availability"] is True

    def test_seller_and_availability_not_patchable(self, make_listing, db, seller):
        gem = make_listing()
        with pytest.raises(ValidationError):
            catalog.update_listing(db, gem["id"], seller, {"seller": "someone-else"})
        with pytest.raises(ValidationError):
            catalog.update_listing(db, gem["id"], seller, {"availability": True})


class TestAdjustStock:
    def test_decrement_and_restore(self, make_listing, db, stock_of):
        gem = make_listing(stock=2)
        assert catalog.adjust_stock(db, gem["id"], -2)["availability"] is False
        assert stock_of(gem["id"]) == 0
        assert catalog.get_listing(db, gem["id"])["availability"] is False

        assert catalog.adjust_stock(db, gem["id"], 1)["availability"] is True
        assert catalog.get_listing(db, gem["id"])["availability"] is True

    def test_never_below_zero(self, make_listing, db, stock_of):
        gem = make_listing(stock=1)
        catalog.adjust_stock(db, gem["id"], -1)
        with pytest.raises(InsufficientStockError) as exc:
            catalog.adjust_stock(db, gem["id"], -1)
        assert exc.value.listing_id == gem["id"]
        assert stock_of(gem["id"]) == 0

    def test_missing_listing(self, db):
        with pytest.raises(NotFoundError):
            catalog.adjust_stock(db, str(ObjectId()), 1)


class TestDelete:
    def test_owner_or_admin_only(self, make_listing, db, other_seller, admin):
        gem = make_listing()
        with pytest.raises(AuthorizationError):
            catalog.delete_listing(db, gem["id"], other_seller)
        catalog.delete_listing(db, gem["id"], admin)
        with pytest.raises(NotFoundError):
            catalog.get_listing(db, gem["id"])

    def test_delete_all_for_seller(self, make_listing, db, seller, other_seller):
        make_listing()
        make_listing(name="Ruby")
        keep = make_listing(seller_id=other_seller.id)
        assert catalog.delete_all_for_seller(db, seller.id) == 2
        assert catalog.get_listing(db, keep["id"])
        assert catalog.seller_listings(db, seller.id) == []


class TestBrowse:
    def test_search_is_case_insensitive(self, make_listing, db):
        make_listing(name="Blue Sapphire")
        make_listing(name="Ruby", hindi_name="Manik", color="Red", planet="Sun",
                     description="Burmese ruby", category="Ruby (Manik)")
        gems, total = catalog.browse_listings(db, search="ruby")
        assert total == 1
        assert gems[0]["name"] == "Ruby"

    def test_price_range_skips_contact_for_price(self, make_listing, db):
        make_listing(price=100.0)
        make_listing(price=900.0)
        make_listing(contact_for_price=True)
        gems, total = catalog.browse_listings(db, min_price=50, max_price=500)
        assert total == 1
        assert gems[0]["price"] == 100.0

    def test_stock_filters(self, make_listing, db):
        make_listing(stock=0)
        make_listing(stock=3)
        make_listing(stock=40)
        assert catalog.browse_listings(db, out_of_stock=True)[1] == 1
        assert catalog.browse_listings(db, in_stock=True)[1] == 2
        assert catalog.browse_listings(db, low_stock=True)[1] == 1

    def test_pagination(self, make_listing, db):
        for i in range(5):
            make_listing(name=f"Gem {i}")
        gems, total = catalog.browse_listings(db, page=2, limit=2, sort="name")
        assert total == 5
        assert [g["name"] for g in gems] == ["Gem 2", "Gem 3"]

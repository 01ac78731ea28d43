from Crawler.Api import APICrawler
from Crawler.Website import CrawlState, WebsiteCrawler
